"""Authentication and authorization.

Learn: Users authenticate with email/password and receive a JWT bearer
token. Every token names the session it was issued for; the token is
only honoured while that session is active, so logout revokes every
token issued before it.
"""
