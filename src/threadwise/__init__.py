"""threadwise: comment placement and thread reconciliation for automated PR reviews."""
