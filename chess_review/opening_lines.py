"""Built-in opening table.

Each entry is ``(eco, name, moves)`` with moves in SAN from the initial
position. The table is static; bump OPENING_LINES_VERSION whenever an
entry changes. Reviews record the version of the table that tagged them.
"""

from __future__ import annotations

OPENING_LINES_VERSION = 1

OPENING_LINES: tuple[tuple[str, str, str], ...] = (
    # E4 openings
    ("B00", "King's Pawn Opening", "e4"),
    # Sicilian Defense
    ("B20", "Sicilian Defense", "e4 c5"),
    ("B21", "Sicilian Defense: Smith-Morra Gambit", "e4 c5 d4 cxd4 c3"),
    ("B22", "Sicilian Defense: Alapin Variation", "e4 c5 c3"),
    ("B30", "Sicilian Defense: Rossolimo Variation", "e4 c5 Nf3 Nc6 Bb5"),
    ("B33", "Sicilian Defense: Sveshnikov Variation", "e4 c5 Nf3 Nc6 d4 cxd4 Nxd4 Nf6 Nc3 e5"),
    ("B50", "Sicilian Defense: Open", "e4 c5 Nf3 d6 d4"),
    ("B54", "Sicilian Defense: Dragon Variation", "e4 c5 Nf3 d6 d4 cxd4 Nxd4 Nf6 Nc3 g6"),
    ("B90", "Sicilian Defense: Najdorf Variation", "e4 c5 Nf3 d6 d4 cxd4 Nxd4 Nf6 Nc3 a6"),
    # French Defense
    ("C00", "French Defense", "e4 e6"),
    ("C01", "French Defense: Exchange Variation", "e4 e6 d4 d5 exd5"),
    ("C02", "French Defense: Advance Variation", "e4 e6 d4 d5 e5"),
    ("C03", "French Defense: Tarrasch Variation", "e4 e6 d4 d5 Nd2"),
    ("C11", "French Defense: Classical Variation", "e4 e6 d4 d5 Nc3 Nf6"),
    ("C15", "French Defense: Winawer Variation", "e4 e6 d4 d5 Nc3 Bb4"),
    # Caro-Kann Defense
    ("B10", "Caro-Kann Defense", "e4 c6"),
    ("B12", "Caro-Kann Defense: Advance Variation", "e4 c6 d4 d5 e5"),
    ("B13", "Caro-Kann Defense: Exchange Variation", "e4 c6 d4 d5 exd5 cxd5"),
    ("B14", "Caro-Kann Defense: Panov-Botvinnik Attack", "e4 c6 d4 d5 exd5 cxd5 c4"),
    ("B15", "Caro-Kann Defense: Main Line", "e4 c6 d4 d5 Nc3"),
    ("B17", "Caro-Kann Defense: Steinitz Variation", "e4 c6 d4 d5 Nc3 dxe4 Nxe4 Nd7"),
    ("B18", "Caro-Kann Defense: Classical Variation", "e4 c6 d4 d5 Nc3 dxe4 Nxe4 Bf5"),
    # Scandinavian Defense
    ("B01", "Scandinavian Defense", "e4 d5"),
    ("B01", "Scandinavian Defense: Main Line", "e4 d5 exd5 Qxd5"),
    ("B01", "Scandinavian Defense: Modern Variation", "e4 d5 exd5 Nf6"),
    # Pirc/Modern Defense
    ("B06", "Modern Defense", "e4 g6"),
    ("B07", "Pirc Defense", "e4 d6 d4 Nf6"),
    ("B08", "Pirc Defense: Classical Variation", "e4 d6 d4 Nf6 Nc3 g6 Nf3"),
    # Alekhine Defense
    ("B02", "Alekhine Defense", "e4 Nf6"),
    ("B03", "Alekhine Defense: Four Pawns Attack", "e4 Nf6 e5 Nd5 d4 d6 c4 Nb6 f4"),
    # Italian Game
    ("C50", "Italian Game", "e4 e5 Nf3 Nc6 Bc4"),
    ("C51", "Evans Gambit", "e4 e5 Nf3 Nc6 Bc4 Bc5 b4"),
    ("C53", "Italian Game: Classical Variation", "e4 e5 Nf3 Nc6 Bc4 Bc5"),
    ("C54", "Italian Game: Giuoco Piano", "e4 e5 Nf3 Nc6 Bc4 Bc5 c3"),
    # Ruy Lopez
    ("C60", "Ruy Lopez", "e4 e5 Nf3 Nc6 Bb5"),
    ("C65", "Ruy Lopez: Berlin Defense", "e4 e5 Nf3 Nc6 Bb5 Nf6"),
    ("C68", "Ruy Lopez: Exchange Variation", "e4 e5 Nf3 Nc6 Bb5 a6 Bxc6"),
    ("C78", "Ruy Lopez: Morphy Defense", "e4 e5 Nf3 Nc6 Bb5 a6 Ba4 Nf6 O-O"),
    ("C84", "Ruy Lopez: Closed Variation", "e4 e5 Nf3 Nc6 Bb5 a6 Ba4 Nf6 O-O Be7"),
    # Scotch Game
    ("C44", "Scotch Game", "e4 e5 Nf3 Nc6 d4"),
    ("C45", "Scotch Game: Main Line", "e4 e5 Nf3 Nc6 d4 exd4 Nxd4"),
    # Four Knights Game
    ("C47", "Four Knights Game", "e4 e5 Nf3 Nc6 Nc3 Nf6"),
    ("C48", "Four Knights Game: Spanish Variation", "e4 e5 Nf3 Nc6 Nc3 Nf6 Bb5"),
    # Petrov Defense
    ("C42", "Petrov Defense", "e4 e5 Nf3 Nf6"),
    ("C43", "Petrov Defense: Steinitz Attack", "e4 e5 Nf3 Nf6 d4"),
    # Philidor Defense
    ("C41", "Philidor Defense", "e4 e5 Nf3 d6"),
    # Vienna Game
    ("C25", "Vienna Game", "e4 e5 Nc3"),
    ("C26", "Vienna Game: Falkbeer Variation", "e4 e5 Nc3 Nf6"),
    # King's Gambit
    ("C30", "King's Gambit", "e4 e5 f4"),
    ("C33", "King's Gambit Accepted", "e4 e5 f4 exf4"),
    ("C30", "King's Gambit Declined", "e4 e5 f4 Bc5"),
    # D4 openings
    ("D00", "Queen's Pawn Opening", "d4"),
    ("D00", "Jobava London", "d4 d5 Nc3"),
    ("D00", "Jobava London", "d4 d5 Nc3 Nf6 Bf4"),
    ("A45", "Jobava London", "d4 Nf6 Nc3 d5 Bf4"),
    # Queen's Gambit
    ("D06", "Queen's Gambit", "d4 d5 c4"),
    ("D10", "Slav Defense", "d4 d5 c4 c6"),
    ("D20", "Queen's Gambit Accepted", "d4 d5 c4 dxc4"),
    ("D30", "Queen's Gambit Declined", "d4 d5 c4 e6"),
    ("D35", "Queen's Gambit Declined: Exchange Variation", "d4 d5 c4 e6 Nc3 Nf6 cxd5"),
    ("D37", "Queen's Gambit Declined: Classical Variation", "d4 d5 c4 e6 Nc3 Nf6 Nf3 Be7"),
    # London System
    ("D02", "London System", "d4 d5 Nf3 Nf6 Bf4"),
    ("A45", "London System", "d4 Nf6 Bf4"),
    # Catalan
    ("E00", "Catalan Opening", "d4 Nf6 c4 e6 g3"),
    ("E01", "Catalan Opening: Closed Variation", "d4 Nf6 c4 e6 g3 d5 Bg2"),
    # King's Indian Defense
    ("E60", "King's Indian Defense", "d4 Nf6 c4 g6"),
    ("E62", "King's Indian Defense: Fianchetto Variation", "d4 Nf6 c4 g6 Nc3 Bg7 Nf3 O-O g3"),
    ("E70", "King's Indian Defense: Classical Variation", "d4 Nf6 c4 g6 Nc3 Bg7 e4 d6 Nf3"),
    ("E80", "King's Indian Defense: Sämisch Variation", "d4 Nf6 c4 g6 Nc3 Bg7 e4 d6 f3"),
    ("E90", "King's Indian Defense: Main Line", "d4 Nf6 c4 g6 Nc3 Bg7 e4 d6 Nf3 O-O Be2"),
    # Nimzo-Indian Defense
    ("E20", "Nimzo-Indian Defense", "d4 Nf6 c4 e6 Nc3 Bb4"),
    ("E32", "Nimzo-Indian Defense: Classical Variation", "d4 Nf6 c4 e6 Nc3 Bb4 Qc2"),
    ("E40", "Nimzo-Indian Defense: Rubinstein Variation", "d4 Nf6 c4 e6 Nc3 Bb4 e3"),
    # Queen's Indian Defense
    ("E12", "Queen's Indian Defense", "d4 Nf6 c4 e6 Nf3 b6"),
    ("E15", "Queen's Indian Defense: Classical Variation", "d4 Nf6 c4 e6 Nf3 b6 g3 Ba6"),
    # Grünfeld Defense
    ("D70", "Grünfeld Defense", "d4 Nf6 c4 g6 Nc3 d5"),
    ("D85", "Grünfeld Defense: Exchange Variation", "d4 Nf6 c4 g6 Nc3 d5 cxd5 Nxd5 e4"),
    # Benoni Defense
    ("A60", "Benoni Defense", "d4 Nf6 c4 c5 d5"),
    ("A61", "Benoni Defense: Modern Variation", "d4 Nf6 c4 c5 d5 e6 Nc3 exd5 cxd5 d6"),
    # Dutch Defense
    ("A80", "Dutch Defense", "d4 f5"),
    ("A83", "Dutch Defense: Staunton Gambit", "d4 f5 e4"),
    ("A90", "Dutch Defense: Classical Variation", "d4 f5 g3 Nf6 Bg2 e6"),
    # English Opening
    ("A10", "English Opening", "c4"),
    ("A16", "English Opening: Anglo-Indian Defense", "c4 Nf6 Nc3"),
    ("A20", "English Opening: Symmetrical Variation", "c4 e5"),
    ("A30", "English Opening: Symmetrical", "c4 c5"),
    # Réti Opening
    ("A04", "Réti Opening", "Nf3"),
    ("A05", "Réti Opening: King's Indian Attack", "Nf3 Nf6 g3"),
    ("A09", "Réti Opening: Main Line", "Nf3 d5 c4"),
    # Bird Opening
    ("A02", "Bird Opening", "f4"),
    ("A03", "Bird Opening: Dutch Variation", "f4 d5"),
)
