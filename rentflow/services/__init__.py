"""Engine services. Every operation takes the caller's ``AsyncSession`` as its unit of work."""
