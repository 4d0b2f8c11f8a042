"""Streamlit entry point for following an agent trace live."""

from trace_view.ui.trace_page import main


if __name__ == "__main__":  # pragma: no cover
    main()
