"""
Module entry point for: python -m pdfstruct

Allows running the converter directly as a module:
    python -m pdfstruct convert <pdf_path> [options]
    python -m pdfstruct replay <tokens_json> [options]
    python -m pdfstruct serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
