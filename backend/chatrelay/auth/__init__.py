"""Session credential validation.

The relay never issues credentials. Tokens are signed by the account
service at login and presented back in the ``token`` cookie; this module
only verifies them.

Services:
    - CredentialValidator: cookie extraction and JWT verification.
"""
