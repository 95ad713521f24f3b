"""Adapters around the git and GnuPG command line tools."""
