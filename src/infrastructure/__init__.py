"""Infrastructure Layer.

File I/O adapters implementing domain ports. All functions here perform I/O
and return or consume domain Value Objects.
"""
