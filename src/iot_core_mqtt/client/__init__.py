"""
Concrete collaborators for the session: a paho-mqtt transport, the device
identity that names the client and its topics, and credential providers.
"""
