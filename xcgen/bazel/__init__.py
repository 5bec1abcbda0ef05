"""Build tool collaborators."""

from xcgen.bazel.query import BazelQueryRunner, parse_query_xml, rules_in_packages_expression

__all__ = ["BazelQueryRunner", "parse_query_xml", "rules_in_packages_expression"]
