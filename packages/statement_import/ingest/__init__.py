"""Statement file access: raw row readers and table/column detection."""
