from __future__ import annotations

from pathlib import Path
import unittest

from extbuild.environment import (
    ConfigLayer,
    MergePolicies,
    MergePolicy,
    merge,
    merge_layers,
    split_flags,
)


PREFIX = Path("/opt/dream")


class MergeTests(unittest.TestCase):
    def test_package_wins_three_way_collision(self) -> None:
        configuration = merge(
            ConfigLayer.create("global", environment={"CC": "gcc"}),
            ConfigLayer.create("platform", environment={"CC": "clang"}),
            ConfigLayer.create("package", environment={"CC": "/opt/cc"}),
            install_prefix=PREFIX,
        )
        self.assertEqual(configuration.environment["CC"], "/opt/cc")
        self.assertEqual(configuration.layers, ["global", "platform", "package"])
        self.assertEqual(configuration.install_prefix, PREFIX)

    def test_flag_keys_append_and_keep_repeated_tokens(self) -> None:
        configuration = merge(
            ConfigLayer.create("global", environment={"CFLAGS": "-O2"}),
            ConfigLayer.create("platform", environment={"CFLAGS": ["-arch", "i386", "-arch", "x86_64"]}),
            ConfigLayer.create("package", environment={"CFLAGS": "-DPNG_NO_ASSEMBLER_CODE"}),
            install_prefix=PREFIX,
        )
        self.assertEqual(
            configuration.environment["CFLAGS"],
            "-O2 -arch i386 -arch x86_64 -DPNG_NO_ASSEMBLER_CODE",
        )

    def test_replace_list_overrides_append_policy(self) -> None:
        configuration = merge(
            ConfigLayer.create("global", environment={"CFLAGS": "-O2"}),
            ConfigLayer.create("platform", environment={"CFLAGS": "-arch armv7"}),
            ConfigLayer.create("package", environment={"CFLAGS": "-O0 -g"}, replace=["CFLAGS"]),
            install_prefix=PREFIX,
        )
        self.assertEqual(configuration.environment["CFLAGS"], "-O0 -g")

    def test_policy_table_can_switch_a_key_to_replace(self) -> None:
        policies = MergePolicies.from_mapping({"replace": ["LIBS"], "append": ["EXTRA_INCLUDES"]})
        self.assertIs(policies.policy_for("LIBS"), MergePolicy.REPLACE)
        self.assertIs(policies.policy_for("CFLAGS"), MergePolicy.APPEND)
        self.assertIs(policies.policy_for("CC"), MergePolicy.REPLACE)

        configuration = merge(
            ConfigLayer.create("global", environment={"LIBS": "-lm", "EXTRA_INCLUDES": "-I/usr/include"}),
            ConfigLayer.create("platform", environment={"LIBS": "-lc -llog"}),
            ConfigLayer.create("package", environment={"EXTRA_INCLUDES": "-I/opt/include"}),
            install_prefix=PREFIX,
            policies=policies,
        )
        self.assertEqual(configuration.environment["LIBS"], "-lc -llog")
        self.assertEqual(configuration.environment["EXTRA_INCLUDES"], "-I/usr/include -I/opt/include")

    def test_unknown_merge_section_key_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            MergePolicies.from_mapping({"prepend": ["CFLAGS"]})

    def test_environment_order_follows_first_appearance(self) -> None:
        configuration = merge(
            ConfigLayer.create("global", environment={"CFLAGS": "-O2", "CC": "gcc"}),
            ConfigLayer.create("platform", environment={"AR": "ar", "CFLAGS": "-fPIC"}),
            ConfigLayer.create("package", environment={"RANLIB": "ranlib", "CC": "clang"}),
            install_prefix=PREFIX,
        )
        self.assertEqual(list(configuration.environment), ["CFLAGS", "CC", "AR", "RANLIB"])

    def test_configure_args_and_definitions(self) -> None:
        configuration = merge_layers(
            [
                ConfigLayer.create("global", configure_args=["--disable-nls"], definitions={"BUILD_SHARED_LIBS": True}),
                ConfigLayer.create("platform", configure_args=["--host=arm-eabi"]),
                ConfigLayer.create("package", definitions={"BUILD_SHARED_LIBS": False, "WITH_PNG": "ON"}),
            ],
            install_prefix=PREFIX,
            variables={"sdk_version": "5.0"},
        )
        self.assertEqual(configuration.extra_configure_args, ["--disable-nls", "--host=arm-eabi"])
        self.assertEqual(configuration.definitions, {"BUILD_SHARED_LIBS": False, "WITH_PNG": "ON"})
        self.assertEqual(configuration.variables, {"sdk_version": "5.0"})

    def test_overlay_combines_package_and_variant_layers(self) -> None:
        policies = MergePolicies.defaults()
        package = ConfigLayer.create("package", environment={"CFLAGS": "-DA", "CC": "gcc"})
        variant = ConfigLayer.create("variant", environment={"CFLAGS": "-DB"}, replace=["LDFLAGS"])
        combined = package.overlay(variant, policies=policies, name="package:demo")

        self.assertEqual(combined.name, "package:demo")
        self.assertEqual(combined.replace, frozenset({"LDFLAGS"}))

        configuration = merge(
            ConfigLayer.create("global", environment={"CFLAGS": "-O2"}),
            ConfigLayer.create("platform"),
            combined,
            install_prefix=PREFIX,
        )
        self.assertEqual(configuration.environment["CFLAGS"], "-O2 -DA -DB")
        self.assertEqual(configuration.environment["CC"], "gcc")

    def test_quoted_flags_survive_merging(self) -> None:
        policies = MergePolicies.defaults()
        package = ConfigLayer.create("package", environment={"CFLAGS": '-I"/opt/my sdk/include"'})
        variant = ConfigLayer.create("variant", environment={"CFLAGS": ['-DNAME="two words"']})
        configuration = merge(
            ConfigLayer.create("global", environment={"CFLAGS": "-O2"}),
            ConfigLayer.create("platform"),
            package.overlay(variant, policies=policies),
            install_prefix=PREFIX,
            policies=policies,
        )
        self.assertEqual(
            split_flags(configuration.environment["CFLAGS"]),
            ["-O2", "-I/opt/my sdk/include", "-DNAME=two words"],
        )

    def test_split_flags_respects_quoting(self) -> None:
        self.assertEqual(split_flags('-DNAME="two words" -O2'), ["-DNAME=two words", "-O2"])
        self.assertEqual(split_flags(["-arch i386", "-g"]), ["-arch", "i386", "-g"])
        self.assertEqual(split_flags(None), [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
