"""Allow running the task runner as a module: python -m tony."""

from tony.runner import main

if __name__ == "__main__":
    main()
