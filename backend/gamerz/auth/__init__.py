"""Authentication module (accounts + JWT session cookies).

Services:
    - UserService: registration, credential checks, approval status.
    - IdentityResolver: session token -> server-side Identity.
"""
