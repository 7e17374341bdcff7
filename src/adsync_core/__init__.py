"""adsync core: multi-source daily ad and commerce metrics pipeline."""
