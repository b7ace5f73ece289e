"""
Strata Structural Parsers
==========================

One parser per layer of the PE offset graph: DOS header, NT headers,
section table, RVA translation, import table and export table.  All of
them read through a shared :class:`~strata.parsers.cursor.ByteCursor`.
"""
