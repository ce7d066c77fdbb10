"""Identity and access: OIDC client, state codec, sessions, permissions."""
