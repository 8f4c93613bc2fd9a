"""Configuration package for the booking chat relay.

Components:
- server_config.json: Socket.IO server and backend gateway settings

Environment variables (HOST, PORT, CLIENT_URL, API_URL, BACKEND_TIMEOUT,
LOG_LEVEL) override the values in this directory; see utils.config_loader.
"""
