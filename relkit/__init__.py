"""relkit - transactional release automation with verified rollback."""

__version__ = "0.1.0"
