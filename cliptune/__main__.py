import cliptune.cli


if __name__ == "__main__":
	cliptune.cli.main()
