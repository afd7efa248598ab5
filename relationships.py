#!/usr/bin/env python3
"""
Relationship resolver for ckptstash
Turns manifest encoder associations into dependency edges between catalog rows
"""

from typing import List, Tuple

from database import CatalogDB
from manifest import ManifestIndex, candidate_edges


def filter_existing(db: CatalogDB, edges: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Keep only edges whose parent and child are both catalog rows"""
    known = set(db.get_filenames())
    return [(parent, child) for parent, child in edges
            if parent in known and child in known]


def resolve_relationships(db: CatalogDB, manifest: ManifestIndex) -> int:
    """Persist manifest edges between existing models, returns how many were new

    Edges naming a file the catalog does not know yet are skipped quietly.
    The check and the inserts share one transaction so a concurrent delete
    cannot slip in between; store errors propagate.
    """
    added = 0
    with db.transaction():
        for parent, child in filter_existing(db, candidate_edges(manifest)):
            if db.add_relationship(parent, child):
                added += 1
    return added
