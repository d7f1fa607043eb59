"""Verify OpenPGP signatures of RPM packages."""
