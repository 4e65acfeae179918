"""Key-value state layout, address and id encodings, and a JSON-RPC server and client for a token ledger."""

__version__ = "0.0.1"
__all__ = ["encoding", "storage", "rpc_server", "rpc_client"]