"""HTTP surface for the authentication core."""
