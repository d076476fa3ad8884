"""
CLI entry point, when used as a module: `python -m helmset`.

Useful for debugging in the IDEs (use the start-mode "Module", module "helmset").
"""
from helmset import cli

if __name__ == '__main__':
    cli.main()
