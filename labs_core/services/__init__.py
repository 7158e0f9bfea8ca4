"""
Lab lifecycle services. The only code allowed to change order, specimen
and result state.
"""
