"""Sheet-side components: column layout, row parser and spreadsheet transport."""
