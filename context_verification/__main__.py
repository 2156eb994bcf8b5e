"""Allow running as: python -m context_verification"""

from .cli import main

if __name__ == "__main__":
    main()
