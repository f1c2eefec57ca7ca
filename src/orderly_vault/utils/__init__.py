"""Transport utilities for the Orderly REST API and Solana JSON-RPC."""
