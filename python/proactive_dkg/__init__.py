__all__ = ["dkg"]
