"""Load generator for a running jwtlab server."""
