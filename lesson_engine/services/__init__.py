"""Services package for lesson orchestration and learning logic."""
