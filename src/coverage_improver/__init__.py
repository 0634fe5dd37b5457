"""Coverage Improver - AI-assisted test coverage improvement for GitHub TypeScript repositories."""

__version__ = "0.1.0"
