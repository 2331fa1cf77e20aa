import os


def main():
    # indicate to the environment we are starting from the CLI
    os.environ["LAMBDAWATCH_CLI"] = "1"

    # config profiles are the first thing that need to be loaded (especially before lambdawatch.config!)
    from .profiles import set_and_remove_profile_from_sys_argv

    set_and_remove_profile_from_sys_argv()

    from .lambdawatch import lambdawatch

    lambdawatch()


if __name__ == "__main__":
    main()
