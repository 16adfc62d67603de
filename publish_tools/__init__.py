"""
Script: publish_tools package
What: Holds Python workflow helpers for the nightly image publish job.
Doing: Groups CLI entrypoints and shared utility code in one importable package.
Why: Keeps tag derivation and multi-registry push logic readable and testable instead of inline workflow shell.
Goal: Provide a clear, maintainable home for nightly image build and publication logic.
"""
