"""Account approval and route authorization service for the SDWIS portal."""
