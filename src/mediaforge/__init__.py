"""MediaForge: background assembly and post-processing of chunked uploads."""
