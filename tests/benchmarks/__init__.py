"""Performance benchmarks for Mneme's memory hot paths.

Run benchmarks with:
    pytest tests/benchmarks/ -v -s
"""
