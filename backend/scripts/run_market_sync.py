from pipelines.market_sync import main


if __name__ == "__main__":
    main()
