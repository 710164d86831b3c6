"""HTTP API for NFT Minter."""
