"""Performance service test contracts"""
