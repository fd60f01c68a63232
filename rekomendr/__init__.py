# rekomendr
#
# Rekomendr.AI backend: prompt in, five recommendation cards out, behind a
# per-visitor daily soft wall.
#
__version__ = "1.0.0"
