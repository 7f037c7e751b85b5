"""Sample application discovered by PackageTree tests."""
