"""Pin images and metadata to IPFS and mint NFTs with step-tracked status."""

__version__ = "0.1.0"
