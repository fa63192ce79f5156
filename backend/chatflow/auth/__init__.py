"""Credential service module.

Issues and verifies the signed identity tokens the relay uses to gate
connections:
- Registration and login over HTTP (``/api/auth``)
- Argon2id password hashing
- HS256 JWTs valid for a fixed window (7 days by default)

Services:
    - CredentialService: register, login, issue_token, verify_token.
"""
