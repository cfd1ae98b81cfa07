"""auth/ -- Authentication and authorization package for rolegate.

Layer rule: auth/ imports only stdlib and third-party libraries. It reads no
settings itself; api/main.py and main.py pass configuration in (signing key,
token lifetimes, bcrypt rounds, default role). api/ and main.py import from
auth/, not the other way around.
"""
