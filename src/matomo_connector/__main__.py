"""Allow ``python -m matomo_connector``."""

from matomo_connector.cli.main import main

if __name__ == "__main__":
    main()
