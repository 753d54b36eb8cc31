"""MintGuard: reliable Solana token minting with RPC failover"""
