"""
External collaborators and infrastructure services: place and menu
providers, the rate-limited client, persistence and reporting.
"""
