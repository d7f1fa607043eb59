"""OpenPGP key and signature decoding."""
