"""Core domain package for the indexer.

Core contains decoding, verification policy, checkpointing and the scan loop
without any HTTP or storage-specific code, keeping the indexing logic
portable and testable with fakes.
"""
