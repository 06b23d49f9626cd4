"""Auth primitives — client secret signing, Apple signing keys, identity tokens."""
