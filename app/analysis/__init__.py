"""Response analysis: citation extraction, gazetteer brand matching, scoring.

Everything in this package is pure: text in, typed results out.
"""
