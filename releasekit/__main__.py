"""Usage: python -m releasekit [command] [options]"""

from releasekit.cli.parser import main

if __name__ == "__main__":
    main()
